"""
Google OAuth Authentication Module

This module handles OAuth 2.0 authentication for the Gmail and Google
Calendar APIs used by the scheduler agent.
"""

import logging
import os
import pickle
from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from scheduling_errors import ConfigurationError

logger = logging.getLogger(__name__)

# Scopes for reading threads, replying, labelling and booking events
SCOPES = [
    'https://www.googleapis.com/auth/calendar',           # Google Calendar access
    'https://www.googleapis.com/auth/gmail.readonly',     # Read Gmail messages
    'https://www.googleapis.com/auth/gmail.send',         # Send Gmail replies
    'https://www.googleapis.com/auth/gmail.modify',       # Thread labels
    'https://www.googleapis.com/auth/gmail.labels',       # Create scheduler labels
]


class GoogleAuth:
    """Handles Google authentication and service creation."""

    def __init__(self, credentials_file='credentials.json', token_file='token.json'):
        """
        Initialize the GoogleAuth object.

        Args:
            credentials_file (str): Path to the OAuth credentials JSON file
            token_file (str): Path to store the access token
        """
        self.credentials_file = credentials_file
        self.token_file = token_file
        self.creds = None

    def authenticate(self):
        """
        Authenticate with Google using OAuth 2.0.

        Returns:
            google.oauth2.credentials.Credentials: The authenticated credentials

        Raises:
            ConfigurationError: If no token exists and no credentials file is available
        """
        if os.path.exists(self.token_file):
            with open(self.token_file, 'rb') as token:
                self.creds = pickle.load(token)

        if not self.creds or not self.creds.valid:
            if self.creds and self.creds.expired and self.creds.refresh_token:
                try:
                    self.creds.refresh(Request())
                    logger.info("Token refreshed successfully")
                except RefreshError as e:
                    logger.warning(f"Token refresh failed: {e}")
                    self.creds = None

            if not self.creds:
                if not os.path.exists(self.credentials_file):
                    raise ConfigurationError(
                        f"Credentials file '{self.credentials_file}' not found. "
                        "Please download your OAuth credentials from Google Cloud Console."
                    )

                flow = InstalledAppFlow.from_client_secrets_file(
                    self.credentials_file,
                    SCOPES
                )
                self.creds = flow.run_local_server(port=0)
                logger.info("New authentication completed")

            with open(self.token_file, 'wb') as token:
                pickle.dump(self.creds, token)
                logger.info(f"Token saved to {self.token_file}")

        return self.creds

    def build_service(self, api_name, api_version):
        """
        Build an authenticated Google API service object.

        Args:
            api_name (str): e.g. 'gmail' or 'calendar'
            api_version (str): e.g. 'v1' or 'v3'
        """
        if not self.creds:
            self.authenticate()
        return build(api_name, api_version, credentials=self.creds, cache_discovery=False)


def get_authenticated_service(api_name, api_version, credentials_file='credentials.json'):
    """
    Convenience function to get an authenticated Google API service.

    Args:
        api_name (str): Google API name
        api_version (str): Google API version
        credentials_file (str): Path to the OAuth credentials JSON file
    """
    auth = GoogleAuth(credentials_file=credentials_file)
    return auth.build_service(api_name, api_version)
