"""
Prompt loading for the query translation agent.

Prompts live in text files next to this module so they can be edited
without touching code.
"""

from pathlib import Path


def _load_prompt_file(filename: str) -> str:
    """
    Load a prompt from a text file.

    Raises:
        FileNotFoundError: If the prompt file doesn't exist
        IOError: If the file is empty or can't be read
    """
    prompt_path = Path(__file__).parent / filename

    if not prompt_path.exists():
        raise FileNotFoundError(f"Prompt file not found: {prompt_path}")

    try:
        content = prompt_path.read_text(encoding='utf-8').strip()
    except OSError as e:
        raise IOError(f"Error reading prompt file {prompt_path}: {e}") from e

    if not content:
        raise IOError(f"Prompt file is empty: {prompt_path}")
    return content


def load_query_agent_prompt() -> str:
    """System prompt for the translation agent"""
    return _load_prompt_file('query_agent_prompt.txt')


__all__ = ['load_query_agent_prompt']
