"""speaktest - Timed media exchange controller for spoken-response tests.

speaktest administers a section of a speaking test one question at a time:
- Plays the question prompt, with a limited number of replays
- Records the spoken answer against a per-question countdown
- Submits each recording to the exam service or a local directory

Usage:
    python -m speaktest --test-id 1 --section reading
    python -m speaktest --profile test --questions config/sample_test.yaml
"""

__version__ = "0.1.0"

from .config import SpeaktestConfig
from .config.loader import load_config

__all__ = [
    "SpeaktestConfig",
    "__version__",
    "load_config",
]
