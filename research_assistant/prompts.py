"""
Prompts
=======
The research assistant's system instruction and the Llama Guard template.

The system instruction is rebuilt per model call so the date it quotes is
always today's.
"""
from datetime import datetime

SYSTEM_PROMPT = """You are a helpful research assistant with the ability to search the web and use other tools.
Today's date is {current_date}.

NOTE: THE USER CAN'T SEE THE TOOL RESPONSE.

A few things to remember:
- Please include markdown-formatted links to any citations used in your response. Only include one
  or two citations per response unless more are needed. ONLY USE LINKS RETURNED BY THE TOOLS.
- Use the calculator tool with numexpr to answer math questions. The user does not understand numexpr,
  so for the final response, use human readable format - e.g. "300 * 200", not "(300 \\times 200)".
"""


def system_prompt(now: datetime | None = None) -> str:
    now = now or datetime.now()
    return SYSTEM_PROMPT.format(current_date=f"{now:%B} {now.day}, {now.year}")


# Llama Guard 3 hazard taxonomy. Codes are what the classifier emits.
UNSAFE_CONTENT_CATEGORIES: dict[str, str] = {
    "S1": "Violent Crimes",
    "S2": "Non-Violent Crimes",
    "S3": "Sex Crimes",
    "S4": "Child Exploitation",
    "S5": "Defamation",
    "S6": "Specialized Advice",
    "S7": "Privacy",
    "S8": "Intellectual Property",
    "S9": "Indiscriminate Weapons",
    "S10": "Hate",
    "S11": "Self-Harm",
    "S12": "Sexual Content",
    "S13": "Elections",
    "S14": "Code Interpreter Abuse",
}

_CATEGORIES_STR = "\n".join(f"{code}: {name}" for code, name in UNSAFE_CONTENT_CATEGORIES.items())

LLAMA_GUARD_INSTRUCTIONS = f"""Task: Check if there is unsafe content in '{{role}}' messages in conversations according to our safety policy with the below categories.

<BEGIN UNSAFE CONTENT CATEGORIES>
{_CATEGORIES_STR}
<END UNSAFE CONTENT CATEGORIES>

<BEGIN CONVERSATION>

{{conversation_history}}

<END CONVERSATION>

Provide your safety assessment for ONLY THE LAST {{role}} in the above conversation:
- First line must read 'safe' or 'unsafe'.
- If unsafe, a second line must include a comma-separated list of violated categories."""
