"""Audio publisher for pub/sub delivery of captured frames."""

import logging
from pubsub import pub
from ..models.audio import AudioFrameBatch

logger = logging.getLogger(__name__)


class AudioPublisher:
    """Publishes frame batches using pubsub.pub.

    Listeners subscribe to the topic with a single ``batch`` argument.
    """

    def __init__(self, topic: str = "audio_frames"):
        self.topic = topic
        self.published = 0
        logger.info(f"AudioPublisher initialized with topic: {topic}")

    def publish(self, batch: AudioFrameBatch) -> None:
        pub.sendMessage(self.topic, batch=batch)
        self.published += 1
