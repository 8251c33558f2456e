from __future__ import annotations

import shlex
from typing import List, Optional, Sequence

RULES_FILE = "RULES.md"
SAMPLE_FILE = "sample.md"


def first_turn_prompt(request: str, document: str) -> str:
    return f"""Create a compelling presentation based on this user request:

<user_request>
{request}
</user_request>

<rules>
Read {RULES_FILE} for the complete formatting rules.
</rules>

<reference>
See {SAMPLE_FILE} for a real example of proper formatting.
</reference>

Create 5-10 well-structured slides and save the result to {document}."""


def context_prompt(request: str, document: str, history: Optional[Sequence[dict]] = None) -> str:
    """Prompt for an agent that has no memory of earlier turns."""
    conversation = ""
    if history:
        lines = [f"{h.get('role', 'user')}: {h.get('content', '')}" for h in history]
        conversation = "\n<conversation>\n" + "\n\n".join(lines) + "\n</conversation>\n"
    return f"""You are editing an existing presentation stored in {document}.
Read it first: it is the current, authoritative version.
{conversation}
<user_request>
{request}
</user_request>

<rules>
Follow the formatting rules in {RULES_FILE}; {SAMPLE_FILE} shows a worked example.
</rules>

Apply the request by editing {document} in place."""


def agent_args(prompt: str, resume_token: Optional[str] = None) -> List[str]:
    args = ["-p", "--force", "--output-format", "stream-json", "--stream-partial-output"]
    if resume_token:
        args += ["--resume", resume_token]
    args.append(prompt)
    return args


def agent_command(binary: str, args: Sequence[str], bin_dir: str = "") -> str:
    """Shell line running the agent; every argument is single-quoted so nothing in it expands."""
    line = " ".join(shlex.quote(a) for a in [binary, *args])
    if bin_dir:
        # bin_dir comes from configuration and may reference $HOME on purpose
        return f'export PATH="{bin_dir}:$PATH"; exec {line}'
    return f"exec {line}"
