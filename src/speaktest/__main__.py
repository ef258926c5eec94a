"""speaktest entry point.

Usage:
    python -m speaktest [OPTIONS]

Options:
    --config PATH       Path to YAML config file
    --profile NAME      Profile name (dev, prod, test)
    --test-id ID        Test to administer
    --section NAME      Section within the test (e.g. reading, repeat)
    --questions PATH    Read questions from a YAML bank instead of the service
    --answers-dir PATH  Save recordings locally instead of uploading
    --mock              Use mock audio components
    --list              List tests and sections offered by the service
    --check-mic         Check microphone access before running
    --help              Show this help message
    --version           Show version
"""

# Load .env file before anything else
try:
    from pathlib import Path as _Path

    from dotenv import load_dotenv

    # Try to find .env in project root (parent of src/)
    _project_root = _Path(__file__).parent.parent.parent
    _env_file = _project_root / ".env"
    if _env_file.exists():
        load_dotenv(_env_file)
    else:
        load_dotenv()  # Fall back to current directory
except ImportError:
    pass  # python-dotenv not installed, skip

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from . import __version__
from .config.loader import load_config
from .config.profiles import detect_profile
from .errors import NoQuestionsAvailableError, QuestionSourceError
from .runner import (
    COMMANDS,
    build_question_source,
    build_submission_channel,
    check_microphone,
    run_section,
)
from .service.questions import ExamServiceClient


def setup_logging(level: str) -> None:
    """Configure logging based on config."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="speaktest",
        description="speaktest - Timed spoken-response test runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m speaktest --list                             # Show available tests
  python -m speaktest --test-id 1 --section reading      # Run a section
  python -m speaktest --check-mic                        # Check microphone access
  python -m speaktest --profile test --mock \\
      --questions config/sample_test.yaml --test-id 1 --section repeat

Environment:
  SPEAKTEST_PROFILE    Set profile (dev, prod, test)
  SPEAKTEST_API_URL    Override the exam service URL
""",
    )

    parser.add_argument("--config", type=Path, help="Path to YAML config file", metavar="PATH")
    parser.add_argument(
        "--profile",
        choices=["dev", "prod", "test"],
        help="Configuration profile to use",
    )
    parser.add_argument("--test-id", help="Test to administer")
    parser.add_argument("--section", help="Section within the test (e.g. reading, repeat)")
    parser.add_argument(
        "--questions",
        type=Path,
        metavar="PATH",
        help="YAML question bank to use instead of the exam service",
    )
    parser.add_argument(
        "--answers-dir",
        type=Path,
        metavar="PATH",
        help="Save recordings to this directory instead of uploading them",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use mock audio components (for testing without hardware)",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List tests and sections offered by the exam service",
    )
    parser.add_argument(
        "--check-mic",
        action="store_true",
        help="Check microphone access first; exits with 4 if it is denied",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"speaktest v{__version__}",
    )

    return parser.parse_args(argv)


def list_tests(client: ExamServiceClient) -> int:
    """Print the test structure offered by the service."""
    structure = client.fetch_test_structure()
    tests = structure.get("tests", structure) if isinstance(structure, dict) else structure
    if isinstance(tests, dict):
        for test_id, sections in tests.items():
            print(f"  {test_id}: {', '.join(sections)}")
    else:
        for entry in tests:
            print(f"  {entry}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for speaktest.

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    args = parse_args(argv)

    # Load configuration
    try:
        if args.config:
            config = load_config(path=args.config)
        elif args.profile:
            config = load_config(profile=args.profile)
        else:
            config = load_config(profile=detect_profile().value)
    except FileNotFoundError as e:
        print(f"Error: Config file not found: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return 1

    setup_logging(config.logging.level)
    logger = logging.getLogger("speaktest")

    logger.info(f"speaktest v{__version__}")
    logger.info(f"Profile: {args.profile or detect_profile().value}")
    logger.info(f"Exam service: {config.service.base_url}")

    if args.list:
        try:
            return list_tests(
                ExamServiceClient(config.service.base_url, timeout=config.service.timeout)
            )
        except QuestionSourceError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    if args.check_mic:
        error = asyncio.run(check_microphone(config, use_mock=args.mock))
        if error is not None:
            print(f"Error: {error}", file=sys.stderr)
            return 4
        print("Microphone OK")
        if not args.test_id and not args.section:
            return 0

    if not args.test_id or not args.section:
        print("Error: --test-id and --section are required", file=sys.stderr)
        return 2

    source = build_question_source(config, args.questions)
    submission = build_submission_channel(config, args.answers_dir)

    print("\n" + "=" * 50)
    print("  speaktest")
    print("=" * 50)
    print(f"  Version: {__version__}")
    print(f"  Test: {args.test_id}  Section: {args.section}")
    print("  Commands: " + ", ".join(f"{k}={v}" for k, v in COMMANDS.items()))
    print("=" * 50)

    try:
        outcome = asyncio.run(
            run_section(
                config,
                source,
                submission,
                args.test_id,
                args.section,
                use_mock=args.mock,
            )
        )
    except NoQuestionsAvailableError as e:
        logger.error(str(e))
        print(f"\nError: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
        return 130
    finally:
        close = getattr(submission, "close", None)
        if close is not None:
            close()

    if outcome is None:
        return 1
    return 0 if not outcome.warnings else 3


if __name__ == "__main__":
    sys.exit(main())
