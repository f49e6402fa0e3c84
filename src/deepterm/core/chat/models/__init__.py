"""Chat domain models.

Re-exports every public symbol so imports like
``from deepterm.core.chat.models import ChatMessage`` work.
"""

from .constants import *  # noqa: F401, F403
from .events import *  # noqa: F401, F403
from .message import *  # noqa: F401, F403
