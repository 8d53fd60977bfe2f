# =============================================================================
# Worker: document-analyzer
# =============================================================================
# Tools:
#   analyze_document {text, type}  — general structured analysis
#   extract_clauses  {text}        — key clauses of a legal document
#   risk_assessment  {text}        — risk level (1-100) and risk factors
# =============================================================================

from docsense.workers.protocol import Tool, WorkerServer, complete_json, run_worker, truncate


async def analyze_document(arguments: dict) -> str:
    doc_type = arguments.get("type") or "General"
    return await complete_json(
        system=(
            f"You are a {doc_type} document analyzer. Provide a detailed analysis "
            "as a JSON object with keys: summary, key_points (array), "
            "parties (array), obligations (array), notable_terms (array)."
        ),
        user_content=f"Analyze this document:\n\n{truncate(arguments['text'])}",
        max_tokens=2048,
    )


async def extract_clauses(arguments: dict) -> str:
    return await complete_json(
        system=(
            "Extract all important clauses from the legal document. Return a JSON "
            'object {"clauses": [{"title", "text", "category"}]}.'
        ),
        user_content=truncate(arguments["text"]),
    )


async def risk_assessment(arguments: dict) -> str:
    return await complete_json(
        system=(
            "Assess the risk level (1-100) of the document and identify risk "
            'factors. Return a JSON object {"risk_score": int, "risk_factors": '
            '[{"factor", "severity", "explanation"}]}.'
        ),
        user_content=truncate(arguments["text"]),
        max_tokens=512,
    )


SERVER = WorkerServer(
    name="document-analyzer",
    tools=[
        Tool(
            name="analyze_document",
            description="Perform comprehensive document analysis",
            handler=analyze_document,
            properties={
                "text": {"type": "string", "description": "Document text to analyze"},
                "type": {"type": "string", "description": "Document type (Legal, Medical, ...)"},
            },
        ),
        Tool(
            name="extract_clauses",
            description="Extract key clauses from legal documents",
            handler=extract_clauses,
        ),
        Tool(
            name="risk_assessment",
            description="Assess risk level in documents",
            handler=risk_assessment,
        ),
    ],
)


if __name__ == "__main__":
    run_worker(SERVER)
