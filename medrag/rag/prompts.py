from typing import Sequence

from medrag.models import RetrievedDocument

GROUNDING_TEMPLATE = """You are a medical expert specializing in {topic}. Your role is to provide accurate, evidence-based information strictly from the medical documents provided below.

CRITICAL INSTRUCTIONS:
- You are providing information about {topic}
- Base your answers ONLY on the context provided from authoritative medical sources
- When citing information, reference the source by number (e.g., [1], [2], etc.) immediately after the relevant statement
- Use citations frequently to show which source supports each claim
- If the context doesn't contain information to answer the question, clearly state that
- Provide detailed, comprehensive answers that address all aspects of the question
- Use clear medical terminology while remaining accessible to patients
- Organize your response with proper structure (paragraphs, lists when appropriate)
- Include specific details, statistics, or recommendations found in the context
- Maintain a professional, compassionate, and informative tone
- Do not make assumptions or provide information not found in the context

Context from Medical Documents:
{context}

Question: {question}

Answer (remember to cite sources using [1], [2], etc.):"""


def format_context(documents: Sequence[RetrievedDocument]) -> str:
    """Number retrieved chunks as [Source n: organization] blocks, in rank order."""
    return "\n\n".join(
        f"[Source {i}: {doc.organization}]\n{doc.content}" for i, doc in enumerate(documents, start=1)
    )


def build_grounding_prompt(question: str, documents: Sequence[RetrievedDocument], topic: str) -> str:
    return GROUNDING_TEMPLATE.format(
        topic=topic,
        context=format_context(documents) or "None",
        question=question,
    )
