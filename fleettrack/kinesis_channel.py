"""
Realtime channels backed by a Kinesis stream of row-change events
"""

import boto3
import json
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from .realtime import ChangeAction, ChangeEvent, DEFAULT_ACTIONS, RealtimeChannel, RealtimeClient

logger = logging.getLogger(__name__)


class KinesisChannel(RealtimeChannel):
    """Reads every shard of the stream and keeps the events this channel wants"""

    def __init__(
        self,
        kinesis_client,
        stream_name: str,
        name: str,
        table: str,
        entity_id: str,
        actions: Sequence[ChangeAction] = DEFAULT_ACTIONS,
        shard_iterator_type: str = "LATEST",
        batch_size: int = 100,
        poll_interval: float = 1.0,
        retry_delay: float = 5.0,
    ):
        super().__init__(name, table, entity_id, actions)
        self.kinesis_client = kinesis_client
        self.stream_name = stream_name
        self.shard_iterator_type = shard_iterator_type
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.retry_delay = retry_delay

        self.records_processed = 0
        self.error_count = 0
        self.last_record_time: Optional[float] = None
        self._shard_tasks: List[asyncio.Task] = []

    async def subscribe(self) -> None:
        """Acknowledged once every shard has an iterator"""
        stream_desc = await self._describe_stream()
        shards = stream_desc['StreamDescription']['Shards']
        if not shards:
            logger.warning(f"No shards found in stream {self.stream_name}")

        iterators = []
        for shard in shards:
            iterators.append((shard['ShardId'], await self._get_shard_iterator(shard['ShardId'])))

        self.is_subscribed = True
        for shard_id, iterator in iterators:
            self._shard_tasks.append(asyncio.create_task(self._consume_shard(shard_id, iterator)))
        logger.info(f"Subscribed to channel {self.name} on stream {self.stream_name} ({len(shards)} shards)")

    async def unsubscribe(self) -> None:
        for task in self._shard_tasks:
            task.cancel()
        self._shard_tasks = []
        await super().unsubscribe()

    def get_lag_ms(self) -> Optional[int]:
        """Time since the last record was read, in milliseconds"""
        if not self.last_record_time:
            return None
        return int((time.time() - self.last_record_time) * 1000)

    async def _describe_stream(self) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            lambda: self.kinesis_client.describe_stream(StreamName=self.stream_name)
        )

    async def _get_shard_iterator(self, shard_id: str) -> str:
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None,
            lambda: self.kinesis_client.get_shard_iterator(
                StreamName=self.stream_name,
                ShardId=shard_id,
                ShardIteratorType=self.shard_iterator_type
            )
        )
        return response['ShardIterator']

    async def _consume_shard(self, shard_id: str, shard_iterator: Optional[str]):
        """Poll one shard until unsubscribed or the shard closes"""
        loop = asyncio.get_running_loop()

        while self.is_subscribed and shard_iterator:
            try:
                iterator = shard_iterator
                response = await loop.run_in_executor(
                    None,
                    lambda: self.kinesis_client.get_records(
                        ShardIterator=iterator,
                        Limit=self.batch_size
                    )
                )

                records = response.get('Records', [])
                if records:
                    self._process_records(records)
                    self.last_record_time = time.time()

                shard_iterator = response.get('NextShardIterator')

                if not records:
                    await asyncio.sleep(self.poll_interval)

            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error consuming from shard {shard_id}: {str(e)}")
                self.error_count += 1

                await asyncio.sleep(self.retry_delay)

                try:
                    shard_iterator = await self._get_shard_iterator(shard_id)
                except Exception as e:
                    logger.error(f"Failed to get new iterator for shard {shard_id}: {str(e)}")
                    break

        logger.info(f"Stopped reading shard {shard_id} for channel {self.name}")

    def _process_records(self, records: List[Dict[str, Any]]):
        for record in records:
            try:
                event = ChangeEvent.model_validate(json.loads(record['Data']))
            except (ValueError, ValidationError, KeyError) as e:
                logger.debug(f"Skipping undecodable record {record.get('SequenceNumber')}: {str(e)}")
                self.error_count += 1
                continue

            self.records_processed += 1
            self.deliver(event)


class KinesisRealtimeClient(RealtimeClient):
    """Hands out Kinesis-backed channels that share one boto3 client"""

    def __init__(
        self,
        stream_name: str,
        region: str,
        shard_iterator_type: str = "LATEST",
        batch_size: int = 100,
        poll_interval: float = 1.0,
        kinesis_client=None,
    ):
        self.stream_name = stream_name
        self.kinesis_client = kinesis_client or boto3.client('kinesis', region_name=region)
        self.shard_iterator_type = shard_iterator_type
        self.batch_size = batch_size
        self.poll_interval = poll_interval

    def channel(self, name, table, entity_id, actions=DEFAULT_ACTIONS) -> KinesisChannel:
        return KinesisChannel(
            self.kinesis_client,
            self.stream_name,
            name,
            table,
            entity_id,
            actions,
            shard_iterator_type=self.shard_iterator_type,
            batch_size=self.batch_size,
            poll_interval=self.poll_interval,
        )

    async def health_check(self) -> bool:
        """Check the stream is reachable and active"""
        try:
            loop = asyncio.get_running_loop()
            desc = await loop.run_in_executor(
                None,
                lambda: self.kinesis_client.describe_stream_summary(StreamName=self.stream_name)
            )
            return desc['StreamDescriptionSummary']['StreamStatus'] == 'ACTIVE'
        except Exception as e:
            logger.error(f"Kinesis health check failed: {str(e)}")
            return False
