"""Meeting scheduling core -- lifecycle, conflict detection, slots, and start notifications.

Provides the data layer (Pydantic schemas, SQLAlchemy models, MeetingRepository),
the MeetingService state machine consumed by transport layers, the free-slot
generator, and the StartTimeNotifier background task.
"""
