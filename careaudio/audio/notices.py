"""Notice publisher for pub/sub delivery of user-facing messages."""

import logging
from typing import Optional

from pubsub import pub

from ..errors import message_for
from ..models.events import Notice, NoticeLevel

logger = logging.getLogger(__name__)

NOTICE_TOPIC = "audio.notice"
STATE_TOPIC = "audio.state"


class NoticePublisher:
    """Publishes notices and state changes using pubsub.pub."""

    def __init__(self, topic: str = NOTICE_TOPIC, state_topic: str = STATE_TOPIC):
        """Initialize notice publisher.

        Args:
            topic: Pub/sub topic name for notices
            state_topic: Pub/sub topic name for capture state changes
        """
        self.topic = topic
        self.state_topic = state_topic
        logger.info(f"NoticePublisher initialized with topic: {topic}")

    def publish_notice(self, notice: Notice) -> None:
        """Publish a notice to the pub/sub topic."""
        pub.sendMessage(self.topic, notice=notice)

    def publish_state(self, old_state, new_state) -> None:
        pub.sendMessage(self.state_topic, old_state=old_state, new_state=new_state)

    def __call__(self, notice: Notice) -> None:
        self.publish_notice(notice)


def make_notice(code: str, level: NoticeLevel = NoticeLevel.ERROR,
                message: Optional[str] = None, **params) -> Notice:
    """Build a notice whose message comes from the error catalogue."""
    return Notice(code=code, message=message or message_for(code, **params), level=level)
