"""
Job queue: serializes submitted work through a single automation worker.

Quick start:
  from job_queue import Dispatcher, QueueItem
  dispatcher = Dispatcher()
  dispatcher.set_consumer(consumer)
  dispatcher.add(QueueItem.create_work_queue({"nama": "CV Maju"}, info="CV Maju"))
"""
from job_queue.item import ItemHooks, QueueItem
from job_queue.consumer import Consumer, RetryableError, restore_queue_item
from job_queue.events import QueueObserver
from job_queue.runner import SequentialRunner
from job_queue.storage import QueueStorage
from job_queue.dispatcher import Dispatcher

__all__ = [
    "Consumer", "Dispatcher", "ItemHooks", "QueueItem", "QueueObserver",
    "QueueStorage", "RetryableError", "SequentialRunner", "restore_queue_item",
]
