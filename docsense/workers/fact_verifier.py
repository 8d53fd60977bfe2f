# =============================================================================
# Worker: fact-verifier
# =============================================================================
# Tools:
#   verify_claim {text, claim} — {verdict: SUPPORTED | NOT_SUPPORTED |
#                                 PARTIAL, confidence: 0-1, evidence: [...]}
# =============================================================================

from docsense.workers.protocol import Tool, WorkerServer, complete_json, run_worker, truncate


async def verify_claim(arguments: dict) -> str:
    return await complete_json(
        system=(
            "Verify the claim against the document. Return a JSON object with: "
            "verdict (SUPPORTED, NOT_SUPPORTED or PARTIAL), confidence (0-1), "
            "evidence (array of text excerpts from the document)."
        ),
        user_content=(
            f"Document: {truncate(arguments['text'])}\n\n"
            f"Claim: {arguments['claim']}"
        ),
    )


SERVER = WorkerServer(
    name="fact-verifier",
    tools=[
        Tool(
            name="verify_claim",
            description="Verify a claim against the document text",
            handler=verify_claim,
            required=("text", "claim"),
            properties={
                "text": {"type": "string"},
                "claim": {"type": "string"},
            },
        ),
    ],
)


if __name__ == "__main__":
    run_worker(SERVER)
