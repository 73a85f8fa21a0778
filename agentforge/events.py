"""
Publish/subscribe for node lifecycle events, keyed by (workflow_id, execution_id).

Delivery is at-most-once and in production order; nothing is buffered, so a
subscriber only sees events published after it subscribed.
"""

import threading
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from .schemas import NodeEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[NodeEvent], None]
Key = Tuple[str, str]


class Subscription:
    def __init__(self, key: Key, callback: Subscriber):
        self.key = key
        self.callback = callback


class EventHub:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: Dict[Key, List[Subscription]] = {}
        logger.info("EventHub initialized")

    def subscribe(self, workflow_id: str, execution_id: str, callback: Subscriber) -> Subscription:
        subscription = Subscription((workflow_id, execution_id), callback)
        with self._lock:
            self._subscribers.setdefault(subscription.key, []).append(subscription)
            total = len(self._subscribers[subscription.key])
        logger.info(f"Subscriber added for {workflow_id}:{execution_id}. Total: {total}")
        return subscription

    def unsubscribe(self, subscription: Subscription):
        with self._lock:
            subscribers = self._subscribers.get(subscription.key)
            if not subscribers or subscription not in subscribers:
                logger.warning("Attempted to remove a subscriber that wasn't registered")
                return
            subscribers.remove(subscription)
            if not subscribers:
                del self._subscribers[subscription.key]
        logger.info(f"Subscriber removed for {subscription.key[0]}:{subscription.key[1]}")

    def subscriber_count(self, workflow_id: str, execution_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get((workflow_id, execution_id), []))

    def publish(self, workflow_id: str, execution_id: str, event: NodeEvent):
        with self._lock:
            subscribers = list(self._subscribers.get((workflow_id, execution_id), []))

        dead = []
        for subscription in subscribers:
            try:
                subscription.callback(event)
            except Exception as e:
                logger.error(f"Failed to deliver {event.type} for node {event.nodeId}: {e}")
                dead.append(subscription)

        # Remove dead subscribers
        for subscription in dead:
            self.unsubscribe(subscription)

        logger.debug(f"Broadcasted {event.type} for node {event.nodeId} to {len(subscribers) - len(dead)} subscriber(s)")

    def emit(self, workflow_id: str, execution_id: str, event_type: str, node_id: str, node_type: str, payload: Optional[Dict[str, Any]] = None) -> NodeEvent:
        event = NodeEvent(
            type=event_type,
            workflowId=workflow_id,
            executionId=execution_id,
            nodeId=node_id,
            nodeType=node_type,
            payload=payload or {},
        )
        self.publish(workflow_id, execution_id, event)
        return event
