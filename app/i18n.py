"""
Internationalization support
"""
from datetime import datetime

from app.utils.timezone_utils import DEFAULT_TIMEZONE, to_local

MESSAGES = {
    'en': {
        'slot_unavailable': (
            "This time slot is no longer available. There's already a {session} scheduled for {time}. "
            "Please choose a different time slot that works for you."
        ),
        'availability_check_failed': (
            "We're having trouble checking availability right now. "
            "Please try again in a moment or choose a different time slot."
        ),
        'start_in_past': 'The appointment must start in the future.',
        'start_too_far': 'Appointments can be booked at most one year in advance.',
        'end_before_start': 'The appointment must end after it starts.',
        'duration_too_short': 'Appointments must last at least {minutes} minutes.',
        'duration_too_long': 'Appointments can last at most {minutes} minutes.',
        'idempotency_mismatch': 'This booking request was already used for a different booking.',
        'session_consultation': 'consultation',
        'session_therapy': 'therapy session',
        'time_format': '{weekday} {day} {month} {year} at {hour:02d}:{minute:02d}',
    },
    'es': {
        'slot_unavailable': (
            "Este horario ya no está disponible. Ya hay una {session} programada para el {time}. "
            "Por favor elija otro horario que le convenga."
        ),
        'availability_check_failed': (
            "Estamos teniendo problemas para comprobar la disponibilidad. "
            "Por favor inténtelo de nuevo en un momento o elija otro horario."
        ),
        'start_in_past': 'La cita debe comenzar en el futuro.',
        'start_too_far': 'Las citas se pueden reservar con un máximo de un año de antelación.',
        'end_before_start': 'La cita debe terminar después de comenzar.',
        'duration_too_short': 'Las citas deben durar al menos {minutes} minutos.',
        'duration_too_long': 'Las citas pueden durar como máximo {minutes} minutos.',
        'idempotency_mismatch': 'Esta solicitud de reserva ya se utilizó para otra reserva.',
        'session_consultation': 'consulta',
        'session_therapy': 'sesión de terapia',
        'time_format': '{weekday} {day} de {month} de {year} a las {hour:02d}:{minute:02d}',
    },
}

WEEKDAYS = {
    'en': ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday'],
    'es': ['lunes', 'martes', 'miércoles', 'jueves', 'viernes', 'sábado', 'domingo'],
}

MONTHS = {
    'en': ['January', 'February', 'March', 'April', 'May', 'June', 'July',
           'August', 'September', 'October', 'November', 'December'],
    'es': ['enero', 'febrero', 'marzo', 'abril', 'mayo', 'junio', 'julio',
           'agosto', 'septiembre', 'octubre', 'noviembre', 'diciembre'],
}


async def get_message(key: str, lang: str = 'en', **params) -> str:
    """
    Get localized message

    Args:
        key: Message key
        lang: Language code (falls back to English)
        params: Values substituted into the message

    Returns:
        Localized message
    """
    catalog = MESSAGES.get(lang) or MESSAGES['en']
    template = catalog.get(key) or MESSAGES['en'].get(key, key)
    return template.format(**params) if params else template


def format_appointment_time(dt: datetime, lang: str = 'en', timezone_str: str = DEFAULT_TIMEZONE) -> str:
    """Format an instant in the practice timezone, e.g. "Monday 10 March 2025 at 09:00"."""
    lang = lang if lang in MESSAGES else 'en'
    local = to_local(dt, timezone_str)
    return MESSAGES[lang]['time_format'].format(
        weekday=WEEKDAYS[lang][local.weekday()],
        day=local.day,
        month=MONTHS[lang][local.month - 1],
        year=local.year,
        hour=local.hour,
        minute=local.minute,
    )


def session_label(session_type: str, lang: str = 'en') -> str:
    lang = lang if lang in MESSAGES else 'en'
    key = 'session_consultation' if session_type == 'consultation' else 'session_therapy'
    return MESSAGES[lang][key]
