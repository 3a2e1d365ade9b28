"""
Google sign-in, whitelist checks and the token lifecycle.

Sign-in runs the OAuth web flow against Google, verifies the returned ID token, and admits
the account only if its email is listed on the ``Users`` worksheet. Admitted users get a
short-lived access token and a single-use refresh token; see :mod:`Expenfyre.core.tokens`.
Refresh tokens are tracked in the session store so they can be revoked before they expire.
"""

import logging
import time
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Optional

import google.auth.transport.requests
import google.oauth2.id_token
import google_auth_oauthlib.flow

from . import tokens
from .service import SheetsClient
from .session import SessionStore
from ..data.model import AccessRequest, User, iter_records
from ..settings.lib import Settings
from ..status import status

LOGIN_SCOPES = [
    'openid',
    'https://www.googleapis.com/auth/userinfo.email',
    'https://www.googleapis.com/auth/userinfo.profile',
]

GOOGLE_AUTH_URI = 'https://accounts.google.com/o/oauth2/auth'
GOOGLE_TOKEN_URI = 'https://oauth2.googleapis.com/token'


@dataclass
class GoogleProfile:
    """The identity Google vouched for in a verified ID token."""
    google_id: str
    email: str
    name: str = ''
    picture: str = ''

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


class AuthService:
    """Orchestrates Google sign-in and token issuance, verification, rotation and revocation.

    Args:
        settings: Service settings (secrets, token lifetimes and rate limits).
        sessions: Session bookkeeping store.
        sheets: Spreadsheet client used for the whitelist and access requests.
        clock: Callable returning the current epoch time.
    """

    def __init__(self, settings: Settings, sessions: SessionStore, sheets: SheetsClient,
                 clock: Callable[[], float] = time.time) -> None:
        self.settings = settings
        self.sessions = sessions
        self.sheets = sheets
        self.clock = clock

    # Google OAuth

    def _flow(self, state: Optional[str] = None) -> google_auth_oauthlib.flow.Flow:
        client_config = {
            'web': {
                'client_id': self.settings.google_client_id,
                'client_secret': self.settings.google_client_secret,
                'auth_uri': GOOGLE_AUTH_URI,
                'token_uri': GOOGLE_TOKEN_URI,
                'redirect_uris': [self.settings.redirect_uri],
            }
        }
        # The callback runs in a new flow instance, so no PKCE verifier can carry over
        return google_auth_oauthlib.flow.Flow.from_client_config(
            client_config,
            scopes=LOGIN_SCOPES,
            redirect_uri=self.settings.redirect_uri,
            state=state,
            autogenerate_code_verifier=False,
        )

    def authorization_url(self, state: Optional[str] = None) -> str:
        """Return the Google consent URL the browser is redirected to."""
        url, _ = self._flow(state).authorization_url(access_type='offline', prompt='consent')
        return url

    def exchange_code(self, code: str) -> GoogleProfile:
        """Exchange an authorization code and verify the returned ID token.

        Args:
            code: The ``code`` query parameter Google redirected back with.

        Returns:
            GoogleProfile: The verified identity.

        Raises:
            status.OAuthException: If the exchange or verification fails.
        """
        flow = self._flow()
        try:
            flow.fetch_token(code=code)
        except Exception as ex:
            raise status.OAuthException(f'Failed to exchange code for tokens: {ex}') from ex

        raw_id_token = getattr(flow.credentials, 'id_token', None)
        if not raw_id_token:
            raise status.OAuthException('Google did not return an ID token.')

        try:
            claims = google.oauth2.id_token.verify_oauth2_token(
                raw_id_token,
                google.auth.transport.requests.Request(),
                self.settings.google_client_id,
            )
        except Exception as ex:
            raise status.OAuthException(f'Failed to verify the ID token: {ex}') from ex

        if not claims.get('email'):
            raise status.OAuthException('The ID token carries no email address.')

        logging.debug(f'Google identity verified for {claims["email"]}')
        return GoogleProfile(
            google_id=str(claims.get('sub', '')),
            email=claims['email'],
            name=claims.get('name', ''),
            picture=claims.get('picture', ''),
        )

    # Whitelist

    def check_user_access(self, email: str) -> Optional[User]:
        """Look ``email`` up on the Users worksheet (case-sensitive).

        Returns:
            User: The whitelisted user, or None if the email is not listed.
        """
        for _, user in iter_records(User, self.sheets.get_rows(User.TAB)):
            if user.email == email:
                return user
        logging.info(f'{email} is not on the access list.')
        return None

    def login(self, profile: GoogleProfile) -> Dict[str, Any]:
        """Admit a verified Google identity and issue its first token pair.

        Returns:
            dict: ``tokens`` (see :meth:`create_tokens`) and ``user``.

        Raises:
            status.AccessDeniedException: If the email is not whitelisted.
            status.RateLimitExceededException: If too many tokens were issued recently.
        """
        user = self.check_user_access(profile.email)
        if user is None:
            raise status.AccessDeniedException(profile.email, profile=profile.to_dict())

        user.name = user.name or profile.name
        user.avatar_url = user.avatar_url or profile.picture
        user.google_id = user.google_id or profile.google_id

        self.sessions.store_user(user.to_dict())
        token_pair = self.create_tokens(user.email)
        logging.info(f'{user.email} signed in.')
        return {'tokens': token_pair, 'user': user.to_dict()}

    # Tokens

    def _check_rate_limit(self, operation: str, email: str) -> None:
        limits = {
            'create': self.settings.rate_limit_create,
            'refresh': self.settings.rate_limit_refresh,
        }
        allowed = self.sessions.hit_rate_limit(
            operation, email, limits[operation], self.settings.rate_limit_window
        )
        if not allowed:
            raise status.RateLimitExceededException(f'Too many "{operation}" requests.')

    def create_tokens(self, email: str, count_quota: bool = True) -> Dict[str, Any]:
        """Issue a new access and refresh token pair for ``email``.

        Args:
            email: The token subject.
            count_quota: Whether to count the call against the ``create`` quota. Callers that
                already counted it pass False.

        Returns:
            dict: ``access_token``, ``refresh_token`` and ``expires_in`` (access lifetime).

        Raises:
            status.RateLimitExceededException: If the creation quota is used up.
        """
        if count_quota:
            self._check_rate_limit('create', email)

        now = self.clock()
        access = tokens.issue(
            email, tokens.TokenType.Access, self.settings.jwt_secret, self.settings.access_token_ttl, now
        )
        refresh = tokens.issue(
            email, tokens.TokenType.Refresh, self.settings.jwt_refresh_secret, self.settings.refresh_token_ttl,
            now
        )
        self.sessions.remember_refresh(refresh['payload']['jti'], email)

        return {
            'access_token': access['token'],
            'refresh_token': refresh['token'],
            'expires_in': self.settings.access_token_ttl,
        }

    def _verify(self, token: str, token_type: tokens.TokenType) -> Optional[Dict[str, Any]]:
        """Run every token check and return the payload, or None on any failure."""
        secret = (
            self.settings.jwt_secret if token_type == tokens.TokenType.Access
            else self.settings.jwt_refresh_secret
        )
        try:
            payload = tokens.decode(token, secret, token_type, now=self.clock())
        except tokens.TokenInvalidError as ex:
            logging.debug(f'Rejected {token_type} token: {ex}')
            return None

        if self.sessions.is_blacklisted(payload['jti']):
            logging.debug(f'Rejected blacklisted {token_type} token {payload["jti"]}')
            return None

        if token_type == tokens.TokenType.Refresh:
            if self.sessions.refresh_owner(payload['jti']) != payload['sub']:
                logging.debug(f'Rejected revoked refresh token {payload["jti"]}')
                return None

        return payload

    def _user_for(self, payload: Optional[Dict[str, Any]]) -> Optional[User]:
        if payload is None:
            return None
        data = self.sessions.load_user(payload['sub'])
        if data is None:
            logging.debug(f'No session user record for {payload["sub"]}')
            return None
        return User.from_dict(data)

    def verify_access_token(self, token: str) -> Optional[User]:
        """Return the user an access token belongs to, or None if it does not verify."""
        return self._user_for(self._verify(token, tokens.TokenType.Access))

    def verify_refresh_token(self, token: str) -> Optional[User]:
        """Return the user a refresh token belongs to, or None if it does not verify."""
        return self._user_for(self._verify(token, tokens.TokenType.Refresh))

    def authenticate(self, token: Optional[str]) -> User:
        """Resolve an access token to its user.

        Raises:
            status.NotAuthenticatedException: If the token is missing or fails any check.
        """
        user = self.verify_access_token(token) if token else None
        if user is None:
            raise status.NotAuthenticatedException
        return user

    def refresh(self, refresh_token: Optional[str]) -> Dict[str, Any]:
        """Rotate a refresh token: revoke it and issue a new token pair.

        Each refresh token can be used once.

        Returns:
            dict: The new pair, as returned by :meth:`create_tokens`, plus ``user``.

        Raises:
            status.NotAuthenticatedException: If the refresh token does not verify.
            status.RateLimitExceededException: If the refresh or creation quota is used up.
        """
        payload = self._verify(refresh_token, tokens.TokenType.Refresh) if refresh_token else None
        user = self._user_for(payload)
        if user is None:
            raise status.NotAuthenticatedException('Invalid refresh token.')

        # Both quotas are counted before the presented token is revoked
        self._check_rate_limit('refresh', user.email)
        self._check_rate_limit('create', user.email)

        self.sessions.blacklist(payload['jti'])
        self.sessions.forget_refresh(payload['jti'])

        token_pair = self.create_tokens(user.email, count_quota=False)
        logging.debug(f'Rotated refresh token for {user.email}')
        return {**token_pair, 'user': user.to_dict()}

    def sign_out(self, email: str, access_token: Optional[str] = None) -> int:
        """Revoke every refresh token of ``email``, and the presented access token.

        Returns:
            int: The number of refresh tokens revoked.
        """
        jtis = self.sessions.refresh_jtis_for(email)
        for jti in jtis:
            self.sessions.blacklist(jti)
            self.sessions.forget_refresh(jti)

        if access_token:
            try:
                self.sessions.blacklist(tokens.peek(access_token)['jti'])
            except (tokens.TokenInvalidError, KeyError):
                logging.debug('Access token presented at sign-out could not be read.')

        logging.info(f'{email} signed out; {len(jtis)} refresh tokens revoked.')
        return len(jtis)

    def clear_rate_limit(self, email: str) -> int:
        return self.sessions.clear_rate_limits(email)

    def cleanup(self) -> Dict[str, int]:
        return self.sessions.cleanup()

    def cleanup_stats(self) -> Dict[str, int]:
        return self.sessions.stats()

    # Access requests

    def submit_access_request(self, profile: Dict[str, Any]) -> str:
        """Record a request to be added to the whitelist.

        Creates the ``Access Request`` worksheet on first use.

        Args:
            profile: ``email`` (required), and optionally ``google_id``, ``name``, ``picture``,
                ``preferred_currency`` and ``timezone``.

        Returns:
            str: The request id.
        """
        email = (profile.get('email') or '').strip()
        if not email:
            raise status.ValidationException('Email is required.')

        request = AccessRequest(
            request_id=f'REQ_{int(self.clock() * 1000)}',
            google_id=str(profile.get('google_id') or profile.get('id') or ''),
            email=email,
            name=profile.get('name') or '',
            avatar_url=profile.get('picture') or profile.get('avatar_url') or '',
            preferred_currency=profile.get('preferred_currency') or 'USD',
            timezone=profile.get('timezone') or 'UTC',
        )
        self.sheets.ensure_worksheet(AccessRequest.TAB, AccessRequest.COLUMNS)
        self.sheets.append_row(AccessRequest.TAB, request.to_row())
        logging.info(f'Access request {request.request_id} submitted for {email}')
        return request.request_id
