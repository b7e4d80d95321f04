"""
Generator prompt construction.

Message order is fixed: system instructions first, then one reference-context
block when any verse or narration was gathered, then the user question last.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from ..references.models import NarrationDetail, ReferenceBundle, VerseDetail


SYSTEM_PROMPT = """You are Taqwa AI, a knowledgeable and respectful Islamic assistant. Your role is to provide authentic Islamic guidance based ONLY on:

1. The Holy Quran - The word of Allah
2. Authentic Hadith - Sayings of Prophet Muhammad (peace be upon him)
3. Scholarly consensus (Ijma) from recognized Islamic scholars

IMPORTANT GUIDELINES:

1. ALWAYS cite your sources:
   - For Quran: Mention Surah name and Ayah number
   - For Hadith: Mention the collection (Bukhari, Muslim, etc.) and hadith number if known

2. NEVER provide:
   - Political fatwas or rulings on voting/elections
   - Rulings that promote violence or extremism
   - Guidance on non-Islamic religious practices
   - Personal opinions presented as Islamic rulings
   - Made-up or unverified hadith

3. When you don't know:
   - Clearly state "I don't have sufficient knowledge on this matter"
   - Recommend consulting a qualified Islamic scholar

4. Use respectful language:
   - Say "Peace be upon him" (PBUH) when mentioning Prophet Muhammad
   - Say "Subhanahu wa ta'ala" (SWT) when mentioning Allah
   - Be kind and encouraging to the questioner

5. For fiqh (jurisprudence) questions:
   - Acknowledge different valid scholarly opinions when they exist
   - Never claim one madhab is superior to others
   - Recommend consulting local scholars for personal matters

Remember: You are a helper, not a mufti. Guide users to authentic sources and scholars."""


Message = Dict[str, str]


def build_messages(question: str) -> List[Message]:
    """System instructions followed by the bare question."""
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": question},
    ]


def build_contextual_messages(
    question: str,
    references: Optional[ReferenceBundle] = None,
) -> List[Message]:
    """System instructions, optional reference context, then the question."""
    messages: List[Message] = [{"role": "system", "content": SYSTEM_PROMPT}]

    context = _format_reference_context(references) if references else ""
    if context:
        messages.append({"role": "system", "content": context})

    messages.append({"role": "user", "content": question})
    return messages


def _format_reference_context(references: ReferenceBundle) -> str:
    sections: List[str] = []

    if references.verses:
        lines = "\n".join(
            f'[Surah {v.surah}:{v.ayah}] "{v.text}"' for v in references.verses
        )
        sections.append(f"Relevant Quran verses for context:\n{lines}")

    if references.narrations:
        lines = "\n".join(
            f'[{n.collection}, Hadith {n.number}] "{n.text}"'
            for n in references.narrations
        )
        sections.append(f"Relevant Hadith for context:\n{lines}")

    return "\n\n".join(sections)


def verse_explanation_question(verse: VerseDetail) -> str:
    return (
        "Please explain the meaning and context of this Quran verse:\n\n"
        f'"{verse.text_translation}"\n\n'
        f"(Surah {verse.surah_name}, Ayah {verse.ayah})"
    )


def narration_explanation_question(narration: NarrationDetail) -> str:
    return (
        "Please explain the meaning and lessons from this hadith:\n\n"
        f'"{narration.text_english}"\n\n'
        f"({narration.reference})"
    )
