import asyncio
import logging
import time

logger = logging.getLogger("meetbot.services.deepgram_stream")


class DeepgramStreamGuard:
	"""
	Reliability helper for the live transcription stream.
	Drops out-of-order results and reconnects when audio stalls.
	"""

	def __init__(self, reconnect_coro, should_reconnect=None, stall_after_sec: float = 10.0, check_every_sec: float = 5.0):
		self._reconnect_coro = reconnect_coro
		self._should_reconnect = should_reconnect
		self.stall_after_sec = float(stall_after_sec)
		self.check_every_sec = float(check_every_sec)
		self.last_event_ts = 0.0
		self.last_audio_time = time.monotonic()
		self._stopped = False

	def note_audio_activity(self):
		self.last_audio_time = time.monotonic()

	def stop(self):
		self._stopped = True

	def reset_order(self):
		# a new stream restarts its timeline at zero
		self.last_event_ts = 0.0

	def is_in_order(self, start: float) -> bool:
		event_ts = float(start or 0.0)
		if event_ts < self.last_event_ts:
			logger.warning("Out-of-order transcription result ignored | start=%s last=%s", event_ts, self.last_event_ts)
			return False
		self.last_event_ts = event_ts
		return True

	def is_stalled(self) -> bool:
		return time.monotonic() - self.last_audio_time > self.stall_after_sec

	async def watchdog(self):
		try:
			while not self._stopped:
				await asyncio.sleep(self.check_every_sec)
				if self._stopped:
					break

				if self._should_reconnect and not self._should_reconnect():
					break

				if self.is_stalled():
					logger.error("Transcription stream stalled; reconnecting")
					success = await self._reconnect_coro()
					if not success:
						logger.error("Reconnect failed; disabling watchdog")
						self._stopped = True
		finally:
			logger.info("Stream watchdog terminated")
