from textwrap import dedent
from typing import Dict, List

# Single source of truth for every instruction the pipeline sends to the model.

CLASSIFIER_SYSTEM = dedent("""
You decide whether the user's latest message can be understood on its own.

Label it "standalone" if it is fully self-contained.
Label it "follow-up" if it depends on the earlier dialogue (pronouns such as it, that, they,
references like "the last point", "my name", or ellipsis). For a follow-up, rewrite it into a
single self-contained question using ONLY facts from the supplied dialogue.

Return exactly one JSON object and nothing else:
{"type": "standalone" | "follow-up", "question": "<self-contained question>"}
""").strip()

ANSWER_SYSTEM = dedent("""
You are a helpful assistant in an ongoing conversation.
Answer clearly and concisely. Provide code examples when they make the answer easier to understand.
""").strip()

GROUNDED_ANSWER_TMPL = dedent("""
Use the context below, recalled from earlier in this conversation and from documents the user
shared, to answer the question. Prefer the context over general knowledge; if it does not
contain the answer, say so politely and answer from general knowledge.

[Context]
{CONTEXT}

[Question]
{QUESTION}
""").strip()

DOC_SUMMARY_SYSTEM = dedent("""
Your task is to help the user by using the scraped content of the page at {URL}.
This scraped content contains useful details that should be used in your answer.

When responding:
1. Focus only on the relevant parts of the data.
2. Summarize information in a clear and simple way.
3. If the data does not have an answer, say so politely.
4. Provide code examples when needed to make the response easier to understand.
""").strip()


def build_history_preview(history: List[Dict[str, str]], max_chars: int = 4000) -> str:
    """Render recent turns as ROLE: text lines, keeping the newest max_chars."""
    lines = []
    for m in history:
        role = (m.get("role") or "user")[:9]
        txt = (m.get("content") or "").strip().replace("\n", " ")
        lines.append(f"{role.upper()}: {txt}")
    return "\n".join(lines)[-max_chars:]


def build_classifier_prompt(history: List[Dict[str, str]], prompt: str) -> str:
    return (
        "Recent dialogue (most recent last):\n"
        f"{build_history_preview(history)}\n\n"
        f"Latest user message: {prompt}\n"
        "Return JSON ONLY."
    )


def build_grounded_prompt(question: str, context: str) -> str:
    return GROUNDED_ANSWER_TMPL.format(CONTEXT=context, QUESTION=question)


def build_summary_instruction(url: str) -> str:
    return DOC_SUMMARY_SYSTEM.format(URL=url)
