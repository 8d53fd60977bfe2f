# =============================================================================
# Worker: legal-analyzer
# =============================================================================
# Tools:
#   check_compliance {text, standards} — one JSON-mode completion per
#   standard; returns {"compliance": {<standard>: {compliant, score,
#   issues, recommendations}}}
# =============================================================================

import asyncio

from docsense.services.llm import parse_json_object
from docsense.workers.protocol import Tool, WorkerServer, complete_json, run_worker, truncate

DEFAULT_STANDARDS = ("GDPR", "HIPAA")


async def _check_standard(standard: str, text: str) -> dict:
    raw = await complete_json(
        system=(
            f"Check compliance with {standard}. Return a JSON object with: "
            "compliant (boolean), score (1-100), issues (array), "
            "recommendations (array)."
        ),
        user_content=text,
        max_tokens=512,
    )
    return parse_json_object(raw, source=f"legal-analyzer/{standard}")


async def check_compliance(arguments: dict) -> dict:
    standards = arguments.get("standards") or list(DEFAULT_STANDARDS)
    if isinstance(standards, str):
        standards = [standards]

    text = truncate(arguments["text"])
    checks = await asyncio.gather(*(_check_standard(s, text) for s in standards))
    return {"compliance": dict(zip(standards, checks, strict=True))}


SERVER = WorkerServer(
    name="legal-analyzer",
    tools=[
        Tool(
            name="check_compliance",
            description="Check a document against regulatory standards",
            handler=check_compliance,
            properties={
                "text": {"type": "string"},
                "standards": {"type": "array", "items": {"type": "string"}},
            },
        ),
    ],
)


if __name__ == "__main__":
    run_worker(SERVER)
