# =============================================================================
# Worker: timeline-builder
# =============================================================================
# Tools:
#   construct_timeline {text} — dated events in chronological order
#   identify_deadlines {text} — due dates and time-sensitive obligations
# =============================================================================

from docsense.workers.protocol import Tool, WorkerServer, complete_json, run_worker, truncate


async def construct_timeline(arguments: dict) -> str:
    return await complete_json(
        system=(
            "Extract all dates and events and build a chronological timeline. "
            'Return a JSON object {"timeline": [{"date", "event"}]} sorted by date.'
        ),
        user_content=truncate(arguments["text"]),
    )


async def identify_deadlines(arguments: dict) -> str:
    return await complete_json(
        system=(
            "Identify critical deadlines, due dates, and time-sensitive "
            'obligations. Return a JSON object {"deadlines": [{"date", '
            '"obligation", "party"}]}.'
        ),
        user_content=truncate(arguments["text"]),
        max_tokens=512,
    )


SERVER = WorkerServer(
    name="timeline-builder",
    tools=[
        Tool(
            name="construct_timeline",
            description="Build a chronological timeline of dated events",
            handler=construct_timeline,
        ),
        Tool(
            name="identify_deadlines",
            description="Identify deadlines and time-sensitive obligations",
            handler=identify_deadlines,
        ),
    ],
)


if __name__ == "__main__":
    run_worker(SERVER)
