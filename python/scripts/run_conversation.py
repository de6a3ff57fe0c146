"""
Interactive Advisor Demo

Runs a consultation in the terminal against the configured reasoner
(rule-based when no API key is set). Pass --script to replay canned answers
instead of reading from stdin.
"""
import sys
import asyncio
from pathlib import Path

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

load_dotenv()

from app.config import get_settings
from app.logging_config import setup_logging
from app.main import build_orchestrator
from advisor.agent.scoring import top_hypotheses


SAMPLE_ANSWERS = [
    "A for-profit software consultancy",
    "Two of us, my co-founder and me",
    "No, we both live in India",
    "We want to raise money from angel investors",
    "Very important, I want to protect my personal assets",
    "Maybe a couple of branches later",
    "Yes",
    "A large operation eventually",
]


def print_beliefs(state) -> None:
    for h in top_hypotheses(state.current_hypotheses, 3):
        bar = "#" * int(h.confidence * 30)
        print(f"    {h.entity.value:24} {h.confidence:6.1%} {bar}")


async def main(provider: str = None, scripted: bool = False, verbose: bool = False):
    setup_logging("DEBUG" if verbose else "WARNING")
    settings = get_settings()
    if provider:
        settings = settings.model_copy(update={"llm_provider": provider})

    orchestrator = build_orchestrator(settings)

    print("Legal Entity Advisor")
    print("=" * 70)
    print(f"Reasoner: {orchestrator.gateway.client.name} ({orchestrator.gateway.client.model})")
    print()

    result = await orchestrator.open_session()
    session_id = result.updated_state.session_id
    answers = iter(SAMPLE_ANSWERS)

    while not result.terminated:
        print(f"Advisor: {result.assistant_message}")
        print()
        if scripted:
            answer = next(answers, None)
            if answer is None:
                break
            print(f"You: {answer}")
        else:
            try:
                answer = input("You: ").strip()
            except (EOFError, KeyboardInterrupt):
                print()
                break
            if not answer:
                continue
        print()

        result = await orchestrator.process_turn(session_id, answer)
        print_beliefs(result.updated_state)
        print()

    print("=" * 70)
    print(result.assistant_message)
    print()

    metrics = orchestrator.get_session_metrics(session_id)
    print(f"Iterations: {metrics['session']['iterations']}  "
          f"Reasoner calls: {metrics['session']['llm_calls']}  "
          f"Tokens: {metrics['session']['tokens_used']}  "
          f"Cost: ${metrics['cost']['total_cost']:.4f}")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(
        description="Talk to the legal entity advisor from the terminal"
    )
    parser.add_argument(
        "--provider",
        choices=["groq", "openai", "anthropic", "rule_based"],
        default=None,
        help="Override LLM_PROVIDER",
    )
    parser.add_argument(
        "--script",
        action="store_true",
        help="Replay sample answers instead of reading stdin",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show the agent's thought/act/observe log",
    )
    args = parser.parse_args()

    asyncio.run(main(provider=args.provider, scripted=args.script, verbose=args.verbose))
