"""
Simple run tree example.

Simulates an agent that calls a model and a tool, reporting each step through
a CallbackManager. With a collector running on RUNTREE_ENDPOINT the finished
tree is exported as one record; the console tracer logs every step as well.
"""

import asyncio
import logging

import runtree
from runtree.tracers.console import ConsoleTracer

logging.basicConfig(level=logging.INFO)


async def main():
    """Run a fake agent with tracing enabled."""
    tracer = runtree.enable_tracing(session_name="examples")

    manager = runtree.get_callback_manager()
    manager.add_handler(ConsoleTracer())

    agent = await manager.handle_chain_start(
        {"name": "calculator_agent"}, {"question": "What is 6 * 7?"}
    )
    steps = agent.get_child()

    llm = await steps.handle_llm_start({"name": "fake-llm"}, ["What is 6 * 7?"])
    for token in ["Use ", "the ", "calculator"]:
        await llm.handle_llm_new_token(token)
    await llm.handle_llm_end({"text": "Use the calculator"})

    await agent.handle_agent_action({"tool": "calculator", "tool_input": "6 * 7"})
    tool = await steps.handle_tool_start({"name": "calculator"}, "6 * 7")
    await tool.handle_tool_end("42")

    await agent.handle_agent_end({"output": "42"})
    await agent.handle_chain_end({"answer": "42"})

    await tracer.close()


if __name__ == "__main__":
    asyncio.run(main())
