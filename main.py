"""SearchSynth - AI-assisted search

Simple CLI for asking one question and printing the streamed answer.
"""

import argparse
import asyncio

from searchsynth.agents.orchestrator import PipelineController
from searchsynth.errors import CancellationError


def _print_progress(state: dict, printed: set[str]) -> None:
    if state.get("search_queries") and "queries" not in printed:
        printed.add("queries")
        print(f"\n[*] Search queries ({len(state['search_queries'])}):")
        for i, q in enumerate(state["search_queries"], 1):
            print(f"  {i}. {q}")

    if state.get("is_done_performing_search") and "search" not in printed:
        printed.add("search")
        print(f"\n[~] Found {len(state.get('search_results', []))} web results")

    if state.get("image_search_queries") and "images" not in printed:
        printed.add("images")
        print(f"[~] Image search: {', '.join(state['image_search_queries'])}")

    if state.get("is_done_processing_search_results") and "processed" not in printed:
        printed.add("processed")
        statuses = state.get("processed_search_results", [])
        ok = sum(1 for s in statuses if s.get("scrape_status") == "success")
        print(f"  [+] Summarized {ok}/{len(statuses)} sources")
        print(f"\n[+] Synthesizing answer...")

    if state.get("final_answer") and not state.get("is_done_generating_final_answer"):
        print(".", end="", flush=True)


async def run_query(query: str):
    """Run one turn and print progress as state updates arrive."""
    print(f"Query: {query}")
    print("-" * 50)

    controller = PipelineController()
    session = controller.store.create_session()
    updates = controller.store.subscribe(session.id)
    turn = asyncio.create_task(controller.generate_assistant_response(session.id, query))
    printed: set[str] = set()

    while not (turn.done() and updates.empty()):
        getter = asyncio.ensure_future(updates.get())
        done, _ = await asyncio.wait({getter, turn}, return_when=asyncio.FIRST_COMPLETED)
        if getter in done:
            _print_progress(getter.result(), printed)
        else:
            getter.cancel()

    try:
        state = turn.result()
    except CancellationError:
        print("\n[!] Cancelled")
        return
    except Exception as e:
        print(f"\n[!] Error: {e}")
        return

    print(f"\n\n{'='*50}")
    print(f"ANSWER ({session.title}):")
    print(f"{'='*50}")
    print(state.final_answer or "")
    if state.invalid_citations:
        print(f"\n[!] Unknown citations: {state.invalid_citations}")
    if state.follow_up_search_queries:
        print("\nFollow-up questions:")
        for q in state.follow_up_search_queries:
            print(f"  - {q}")


def main():
    parser = argparse.ArgumentParser(description="SearchSynth AI-assisted search")
    parser.add_argument("--query", "-q", required=True, help="Question to answer")

    args = parser.parse_args()

    asyncio.run(run_query(args.query))


if __name__ == "__main__":
    main()
