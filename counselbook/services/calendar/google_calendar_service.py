# counselbook/services/calendar/google_calendar_service.py
import logging
from typing import Any, Dict, Optional
from uuid import UUID

from cryptography.fernet import Fernet, InvalidToken
from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from sqlalchemy.orm import Session

from counselbook.config.settings import get_settings
from counselbook.models.calendar_integration import CalendarIntegration
from counselbook.services.integrations.base import (
    CalendarSyncAdapter,
    CalendarSyncError,
    EventDetails,
    EventWindow,
)

settings = get_settings()

logger = logging.getLogger(__name__)

# Event already gone on the provider side
GONE_STATUSES = (404, 410)

# Revoked/expired refresh token, undecryptable stored token, network failure
CLIENT_ERRORS = (GoogleAuthError, InvalidToken, OSError)


class GoogleCalendarService(CalendarSyncAdapter):
    """Pushes booked sessions to the counselor's connected Google Calendar"""

    SCOPES = ['https://www.googleapis.com/auth/calendar']

    def __init__(self, db: Session):
        self.db = db
        self.fernet = Fernet(settings.CALENDAR_ENCRYPTION_KEY.encode())

    def create_event(self, details: EventDetails) -> Optional[Dict[str, Any]]:
        integration = self._get_integration(details.counselor_id)
        if not integration:
            logger.info(f"Counselor {details.counselor_id} has no connected calendar, skipping event")
            return None

        body = {
            'summary': f"Counseling session - {details.client_name}",
            'description': details.notes or "",
            'start': self._event_time(details.window.start, details.window),
            'end': self._event_time(details.window.end, details.window),
            'attendees': [{'email': details.client_email}],
        }
        if details.with_video_meeting:
            body['conferenceData'] = {
                'createRequest': {
                    # Same request id on retry returns the same conference
                    'requestId': str(details.appointment_id),
                    'conferenceSolutionKey': {'type': 'hangoutsMeet'},
                }
            }

        try:
            event = self._client(integration).events().insert(
                calendarId=integration.calendar_id,
                body=body,
                conferenceDataVersion=1,
                sendUpdates='all',
            ).execute()
        except HttpError as e:
            raise CalendarSyncError(f"Google Calendar rejected event for appointment {details.appointment_id}: {e}")
        except CLIENT_ERRORS as e:
            raise CalendarSyncError(f"Google Calendar call failed for appointment {details.appointment_id}: {e!r}")

        logger.info(f"Created Google Calendar event {event['id']} for appointment {details.appointment_id}")
        return {
            'event_id': event['id'],
            'meeting_link': event.get('hangoutLink'),
        }

    def cancel_event(self, event_id: str, counselor_id: UUID) -> bool:
        integration = self._get_integration(counselor_id)
        if not integration:
            return False

        try:
            self._client(integration).events().delete(
                calendarId=integration.calendar_id,
                eventId=event_id,
                sendUpdates='all',
            ).execute()
        except HttpError as e:
            if e.resp.status in GONE_STATUSES:
                logger.info(f"Google Calendar event {event_id} already removed")
                return True
            raise CalendarSyncError(f"Failed to delete Google Calendar event {event_id}: {e}")
        except CLIENT_ERRORS as e:
            raise CalendarSyncError(f"Failed to delete Google Calendar event {event_id}: {e!r}")

        logger.info(f"Deleted Google Calendar event {event_id}")
        return True

    def reschedule_event(self, event_id: str, counselor_id: UUID, window: EventWindow) -> bool:
        integration = self._get_integration(counselor_id)
        if not integration:
            return False

        try:
            self._client(integration).events().patch(
                calendarId=integration.calendar_id,
                eventId=event_id,
                body={
                    'start': self._event_time(window.start, window),
                    'end': self._event_time(window.end, window),
                },
                sendUpdates='all',
            ).execute()
        except HttpError as e:
            raise CalendarSyncError(f"Failed to move Google Calendar event {event_id}: {e}")
        except CLIENT_ERRORS as e:
            raise CalendarSyncError(f"Failed to move Google Calendar event {event_id}: {e!r}")

        logger.info(f"Moved Google Calendar event {event_id} to {window.start.isoformat()}")
        return True

    def get_credentials(self, integration: CalendarIntegration) -> Credentials:
        """Build credentials from the stored, encrypted tokens"""
        access_token = self.fernet.decrypt(integration.access_token_encrypted).decode()
        refresh_token = None
        if integration.refresh_token_encrypted:
            refresh_token = self.fernet.decrypt(integration.refresh_token_encrypted).decode()
        return Credentials(
            token=access_token,
            refresh_token=refresh_token,
            token_uri=settings.GOOGLE_TOKEN_URI,
            client_id=settings.GOOGLE_CLIENT_ID,
            client_secret=settings.GOOGLE_CLIENT_SECRET,
            scopes=self.SCOPES,
        )

    def _client(self, integration: CalendarIntegration):
        return build('calendar', 'v3', credentials=self.get_credentials(integration), cache_discovery=False)

    def _get_integration(self, counselor_id: UUID) -> Optional[CalendarIntegration]:
        return self.db.query(CalendarIntegration).filter_by(
            counselor_id=counselor_id,
            provider='google',
            is_active=True,
        ).first()

    @staticmethod
    def _event_time(moment, window: EventWindow) -> Dict[str, str]:
        return {'dateTime': moment.isoformat(), 'timeZone': window.timezone_name}
