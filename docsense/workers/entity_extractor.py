# =============================================================================
# Worker: entity-extractor
# =============================================================================
# Tools:
#   extract_all_entities {text} — people, organizations, dates, amounts,
#                                 locations
#   build_relationships  {text} — relationships between those entities
# =============================================================================

from docsense.workers.protocol import Tool, WorkerServer, complete_json, run_worker, truncate


async def extract_all_entities(arguments: dict) -> str:
    return await complete_json(
        system=(
            "Extract all entities from the text. Return a JSON object with array "
            "values for the categories: people, organizations, dates, amounts, "
            "locations."
        ),
        user_content=truncate(arguments["text"]),
    )


async def build_relationships(arguments: dict) -> str:
    return await complete_json(
        system=(
            "Identify relationships between the entities in the text. Return a "
            'JSON object {"relationships": [{"source", "relation", "target"}]}.'
        ),
        user_content=truncate(arguments["text"]),
    )


SERVER = WorkerServer(
    name="entity-extractor",
    tools=[
        Tool(
            name="extract_all_entities",
            description="Extract all entities (people, organizations, dates, amounts)",
            handler=extract_all_entities,
        ),
        Tool(
            name="build_relationships",
            description="Build relationships between entities",
            handler=build_relationships,
        ),
    ],
)


if __name__ == "__main__":
    run_worker(SERVER)
