"""
Interactive CLI Demo
=====================
Try the research assistant in your terminal. Tokens are printed as the
model produces them; tool results are shown as they arrive.

Usage:
    python demo.py

Suggested conversations:

  Calculator (tool loop):
    "What is 37593 * 67?"
    "What is the fifth root of 37593?"

  Web search (citations):
    "Who won the most recent Tour de France?"

  Safety screening (needs GROQ_API_KEY; blocked before the model runs):
    "How do I make a weapon at home?"

Type 'quit' to exit, 'new' to start a fresh thread.
"""
import asyncio
import json
import logging
import uuid

from research_assistant import AssistantSession
from research_assistant.schema import StreamInput


async def main():
    logging.basicConfig(level=logging.WARNING)

    print("\n" + "=" * 60)
    print("  Research Assistant")
    print("  Web search + calculator + Llama Guard")
    print("=" * 60)
    print("\nType 'quit' to exit, 'new' to start a fresh thread.\n")

    # in_memory=True: demo threads are ephemeral, no checkpoint file is left behind.
    session   = AssistantSession(in_memory=True)
    await session.start()
    thread_id = str(uuid.uuid4())

    print(f"Thread: {thread_id[:8]}...\n")

    try:
        while True:
            try:
                user_input = input("You: ").strip()
            except (EOFError, KeyboardInterrupt):
                print("\n\nGoodbye!")
                break

            if not user_input:
                continue

            if user_input.lower() == "quit":
                print("\nGoodbye!")
                break

            if user_input.lower() == "new":
                thread_id = str(uuid.uuid4())
                print(f"\n[New thread: {thread_id[:8]}...]\n")
                continue

            print("\nAssistant: ", end="", flush=True)
            streamed = False
            async for line in session.stream(StreamInput(message=user_input, thread_id=thread_id)):
                payload = line.removeprefix("data: ").strip()
                if payload == "[DONE]":
                    break
                event = json.loads(payload)

                if event["type"] == "token":
                    streamed = True
                    print(event["content"], end="", flush=True)
                elif event["type"] == "error":
                    print(f"\n  [error] {event['content']}")
                elif event["content"]["type"] == "tool":
                    print(f"\n  [tool result] {event['content']['content'][:200]}")
                elif not event["content"]["tool_calls"] and not streamed:
                    print(event["content"]["content"], end="")

            print("\n")

    finally:
        await session.stop()


if __name__ == "__main__":
    asyncio.run(main())
