"""
Tests for localized booking messages
"""

from datetime import datetime, timezone

from app.i18n import format_appointment_time, get_message, session_label


class TestMessages:

    async def test_parameters_are_substituted(self):
        message = await get_message('duration_too_short', 'en', minutes=15)
        assert message == 'Appointments must last at least 15 minutes.'

    async def test_unknown_language_falls_back_to_english(self):
        assert await get_message('start_in_past', 'de') == 'The appointment must start in the future.'

    async def test_unknown_key_is_returned_as_is(self):
        assert await get_message('no_such_key', 'es') == 'no_such_key'

    def test_time_is_formatted_in_practice_timezone(self):
        instant = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)
        assert format_appointment_time(instant, 'en', 'UTC') == 'Monday 10 March 2025 at 09:00'
        assert format_appointment_time(instant, 'es', 'Europe/Madrid') == 'lunes 10 de marzo de 2025 a las 10:00'

    def test_session_labels(self):
        assert session_label('consultation', 'es') == 'consulta'
        assert session_label('therapy') == 'therapy session'
