"""
Multi-source bundle prompts

為每個 StoryBundle 產生候選 synthesis 請求的 prompt：
列出所有來源 publisher，附上 verification 可信度，並要求固定的 JSON 輸出。
"""

from typing import Optional

from topic_synth.models import BundleVerification, StoryBundle, StoryBundleSource

GUIDELINES = """
GUIDELINES:
1. Accuracy: use only facts reported by the listed sources (who, what, when, where, why).
2. Neutral tone: no opinions, emotive language or personal interpretation in the summary.
3. Balance: represent every major viewpoint in the coverage without favouring one source.
4. Disagreement: where sources differ in emphasis or framing, surface it as a frame/reframe pair.
""".strip()

OUTPUT_FORMAT = """
OUTPUT FORMAT:
Return exactly one JSON object with these keys and no extraneous text:

{
  "summary": "[2-4 sentence neutral summary synthesizing the story across all sources]",
  "frames": [
    { "frame": "[Concise perspective from one editorial direction]", "reframe": "[Concise counter-perspective]" }
  ],
  "source_count": <number of sources>,
  "source_publishers": ["<publisher 1>", "<publisher 2>"],
  "verification_confidence": <0..1 confidence score>
}

Rules:
- "summary" must be 2-4 sentences covering what all sources agree on.
- "frames" must have 2-4 entries; each reframe directly counters its frame.
- Use terse, debate-style language for frames and reframes.
""".strip()


def format_source_line(index: int, source: StoryBundleSource) -> str:
    return f'  {index}. [{source.publisher}] "{source.title}" ({source.url})'


def build_bundle_prompt(bundle: StoryBundle, verification: Optional[BundleVerification] = None) -> str:
    """
    產生 multi-source synthesis prompt

    Args:
        bundle: StoryBundle (來源已排序，prompt 內容因此可重現)
        verification: 該 bundle 的 BundleVerification；None 時標示為無法取得

    Returns:
        Prompt 字串
    """
    count = len(bundle.sources)
    plural = '' if count == 1 else 's'

    lines = [
        "You are synthesizing a news story covered by multiple sources.",
        f"This story is covered by {count} source{plural}:",
    ]
    lines.extend(format_source_line(index, source) for index, source in enumerate(bundle.sources, start=1))
    lines.append('')
    lines.append(f"Headline: {bundle.headline}")

    if bundle.summary_hint:
        lines.append(f"Summary hint (from feed): {bundle.summary_hint}")

    if verification is not None:
        lines.append(f"Verification confidence: {verification.confidence * 100:.0f}%")
    else:
        lines.append("Verification confidence: not available")

    lines.extend(['', GUIDELINES, '', OUTPUT_FORMAT])
    return '\n'.join(lines)
