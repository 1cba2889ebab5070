"""Prompt assembly for generative nodes.

A prompt has two parts separated by a rule line:

  <system prompt>

  ---

  Context Facts:
  <one fact per line>

  Conversation History:
  <role>: <content>

  Task: <task, or the default instruction>
"""

from contextflow.graph.context_chain import StructuredContext

DEFAULT_TASK = "Respond to the context above."
SECTION_RULE = "\n\n---\n\n"


def render_context(context: StructuredContext, default_task: str = DEFAULT_TASK) -> str:
    """Render the facts, history and task sections of a structured context."""
    sections: list[str] = []

    if context.facts:
        sections.append("Context Facts:\n" + "\n".join(context.facts))

    if context.history:
        turns = "\n".join(f"{msg.role}: {msg.content}" for msg in context.history)
        sections.append("Conversation History:\n" + turns)

    # The task section is always present
    sections.append(f"Task: {context.task or default_task}")

    return "\n\n".join(sections)


def build_prompt(
    system_prompt: str,
    context: StructuredContext,
    default_task: str = DEFAULT_TASK,
) -> str:
    """Compose the full prompt sent to the completion gateway.

    Args:
        system_prompt: The node's system prompt (may be empty)
        context: Structured context inherited by the node
        default_task: Instruction used when the context carries no task

    Returns:
        Prompt text
    """
    body = render_context(context, default_task)
    if not system_prompt.strip():
        return body
    return system_prompt.strip() + SECTION_RULE + body
