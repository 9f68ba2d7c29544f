"""Builds and owns every long-lived component of the service.

One LightSync instance exists per process (per app in tests).  Components
receive the pieces they need by reference; only the LightService mutates
the fixture registry.
"""

import logging

import config
from services.audio_input import AnalysisLoop, PipeAudioSource
from services.broadcast import Broadcaster
from services.events import EventBus
from services.hub import create_hub
from services.layout import LayoutService
from services.lights import LightService
from services.scene_engine import SceneEngine
from services.sync_engine import SyncEngine
from services.test_patterns import TestPatternRunner

logger = logging.getLogger(__name__)


class LightSync:
    def __init__(self, hub=None, store=None, events=None, **light_options):
        if store is None:
            import db as store
        self.events = events or EventBus()
        self.lights = LightService(hub or create_hub(), events=self.events, store=store, **light_options)
        self.layout = LayoutService(store)
        self.scenes = SceneEngine(self.lights, self.layout, store=store, events=self.events)
        self.sync = SyncEngine(self.lights, events=self.events)
        self.tests = TestPatternRunner(self.lights, self.scenes)
        self.broadcaster = Broadcaster(self.events, self.sync, self.lights, self.scenes)
        self.audio_source = None
        self.analysis = None

    def start(self, audio_analysis=config.AUDIO_ANALYSIS):
        """Connect to the hub and start the background loops."""
        self.lights.initialize()
        self.lights.start_health_check()
        if audio_analysis:
            self.audio_source = PipeAudioSource()
            self.analysis = AnalysisLoop(self.audio_source, self.sync, self.broadcaster)
            self.audio_source.start()
            self.analysis.start()
        logger.info("LightSync started (audio analysis %s)", "on" if audio_analysis else "off")

    def stop_manual_effects(self):
        """Manual control wins: stop section effects, test patterns and the running scene."""
        self.sync.stop_effects()
        self.tests.stop(reset=False)
        self.scenes.stop()

    def shutdown(self):
        if self.analysis is not None:
            self.analysis.stop()
        if self.audio_source is not None:
            self.audio_source.stop()
        self.stop_manual_effects()
        self.lights.shutdown()
