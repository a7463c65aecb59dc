"""Approval workflow example: an LLM drafts, a human confirms, a tool sends.

Run with an API key for the chosen model provider, e.g.
``OPENAI_API_KEY=... python guides/approval_example.py``.
"""

import asyncio

from chainflow import ChainExecutor, ExecStatus, PydanticAIChatClient, ToolRegistry
from chainflow.persistence import InMemoryExecutionRepository, InMemoryWorkflowStore

WORKFLOW = {
    "name": "Customer reply",
    "nodes": [
        {
            "id": "start",
            "type": "start",
            "parameters": [{"name": "question", "required": True}],
        },
        {
            "id": "draft",
            "type": "llm",
            "data": {
                "model": "openai:gpt-4o-mini",
                "prompt": "You are a helpful support agent. Answer briefly.",
                "userPrompt": "${question}",
                "outputVariable": "draft",
            },
        },
        {
            "id": "review",
            "type": "human_confirm",
            "data": {
                "confirmParameters": [
                    {"name": "approved", "type": "boolean", "required": True},
                    {"name": "edited", "description": "Optional replacement text"},
                ]
            },
        },
        {
            "id": "check",
            "type": "condition",
            "data": {"conditions": [{"name": "send", "expression": "${approved} == true"}]},
        },
        {
            "id": "send",
            "type": "tool",
            "data": {"toolName": "send_reply", "parameters": {"text": "${draft}"}},
        },
        {"id": "end", "type": "end"},
    ],
    "edges": [
        {"source": "start", "target": "draft"},
        {"source": "draft", "target": "review"},
        {"source": "review", "target": "check"},
        {"source": "check", "target": "send", "condition": "send"},
        {"source": "send", "target": "end"},
    ],
}


async def main():
    tools = ToolRegistry()

    @tools.tool()
    def send_reply(text: str) -> dict:
        print(f"Sending reply: {text}")
        return {"sent": True}

    store = InMemoryWorkflowStore()
    store.add("customer_reply", WORKFLOW)
    executor = ChainExecutor(
        store,
        InMemoryExecutionRepository(),
        llm=PydanticAIChatClient(),
        tools=tools,
    )

    execute_id = await executor.execute_async(
        "customer_reply", {"question": "How do I reset my password?"}
    )
    info = await executor.wait(execute_id)
    print(f"Run {execute_id} is {info.status.value}")

    if info.status == ExecStatus.SUSPENDED:
        print("Draft:", info.nodes["draft"].result)
        print("Requested:", [p.name for p in info.suspended_params])
        await executor.resume(execute_id, {"approved": True})
        info = await executor.wait(execute_id)

    print(f"Final status: {info.status.value}")
    print(f"Result: {info.result}")


if __name__ == "__main__":
    asyncio.run(main())
