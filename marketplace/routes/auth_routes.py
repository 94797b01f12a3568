from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from marketplace.auth import saml
from marketplace.auth.dependencies import get_current_user, get_optional_user, get_settings
from marketplace.auth.sessions import issue_session, set_token_cookie
from marketplace.core.config import Settings
from marketplace.database import get_db
from marketplace.models.user import User
from marketplace.services import accounts

router = APIRouter(tags=['auth'])

MANUAL_VERIFICATION_ERROR = 'CheckConsoleForOTP'


class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str
    student_id: str
    contact_number: str
    avatar_url: str | None = None


class VerifyOtpRequest(BaseModel):
    email: str
    otp: str


class ResendOtpRequest(BaseModel):
    email: str


class LoginRequest(BaseModel):
    email: str
    password: str


class CompleteProfileRequest(BaseModel):
    student_id: str
    contact_number: str
    avatar_url: str | None = None


class AvatarRequest(BaseModel):
    avatar_url: str


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    student_id: str | None = None
    contact_number: str | None = None
    avatar: str
    is_verified: bool
    is_admin: bool


def get_email_service(request: Request):
    return request.app.state.email_service


def to_user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        student_id=user.student_id,
        contact_number=user.contact_number,
        avatar=user.avatar_url,
        is_verified=user.is_verified,
        is_admin=user.is_admin,
    )


def verify_redirect(email: str, error: str | None = None) -> RedirectResponse:
    query = {'email': email}
    if error:
        query['error'] = error
    return RedirectResponse(url=f'/auth/verify?{urlencode(query)}', status_code=status.HTTP_303_SEE_OTHER)


def post_login_destination(user: User) -> str:
    return '/auth/complete-profile' if user.needs_profile_completion else '/dashboard'


@router.post('/register')
def register(
    data: RegisterRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    email_service=Depends(get_email_service),
):
    dispatch = accounts.register(
        db,
        settings,
        email_service,
        name=data.name,
        email=data.email,
        password=data.password,
        student_id=data.student_id,
        contact_number=data.contact_number,
        avatar_url=data.avatar_url,
    )
    if not dispatch.delivered:
        return verify_redirect(dispatch.user.email, MANUAL_VERIFICATION_ERROR)
    return verify_redirect(dispatch.user.email)


@router.post('/resend-otp')
def resend_otp(
    data: ResendOtpRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    email_service=Depends(get_email_service),
):
    dispatch = accounts.resend_otp(db, settings, email_service, data.email)
    if dispatch is None:
        return RedirectResponse(url='/auth/login', status_code=status.HTTP_303_SEE_OTHER)
    if not dispatch.delivered:
        return verify_redirect(dispatch.user.email, MANUAL_VERIFICATION_ERROR)
    return verify_redirect(dispatch.user.email)


@router.post('/verify')
def verify_otp(
    data: VerifyOtpRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    outcome = accounts.verify_otp(db, data.email, data.otp)
    if outcome.already_verified:
        return RedirectResponse(url='/auth/login', status_code=status.HTTP_303_SEE_OTHER)

    response = RedirectResponse(url=post_login_destination(outcome.user), status_code=status.HTTP_303_SEE_OTHER)
    issue_session(db, outcome.user, response, settings)
    return response


@router.post('/login')
def login(
    data: LoginRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = accounts.authenticate(db, data.email, data.password)
    if not user.is_verified:
        return verify_redirect(user.email)

    response = RedirectResponse(url='/dashboard', status_code=status.HTTP_303_SEE_OTHER)
    issue_session(db, user, response, settings)
    return response


@router.api_route('/logout', methods=['GET', 'POST'])
def logout(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    response = RedirectResponse(url='/', status_code=status.HTTP_303_SEE_OTHER)
    accounts.logout(
        db,
        response,
        settings,
        token=request.cookies.get(settings.token_cookie_name),
        session_id=request.cookies.get(settings.session_cookie_name),
    )
    return response


@router.post('/complete-profile')
def complete_profile(
    data: CompleteProfileRequest,
    current_user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    if current_user is None:
        return RedirectResponse(url='/auth/login', status_code=status.HTTP_303_SEE_OTHER)

    user = accounts.complete_profile(
        db,
        current_user,
        student_id=data.student_id,
        contact_number=data.contact_number,
        avatar_url=data.avatar_url,
    )
    response = RedirectResponse(url='/dashboard', status_code=status.HTTP_303_SEE_OTHER)
    set_token_cookie(response, user, settings)
    return response


@router.get('/me', response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    return to_user_response(current_user)


@router.put('/avatar', response_model=UserResponse)
def update_avatar(
    data: AvatarRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return to_user_response(accounts.update_avatar(db, current_user, data.avatar_url))


@router.delete('/avatar', response_model=UserResponse)
def remove_avatar(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return to_user_response(accounts.remove_avatar(db, current_user))


async def prepare_saml_request(request: Request) -> dict:
    form_data = await request.form()
    return saml.build_request_data(
        url=str(request.url),
        host=request.headers.get('host', ''),
        query_params=dict(request.query_params),
        form_data=dict(form_data),
    )


@router.get('/sso/login')
async def sso_login(request: Request, settings: Settings = Depends(get_settings)):
    auth = saml.init_saml_auth(await prepare_saml_request(request), settings)
    return RedirectResponse(url=auth.login())


@router.post('/sso/acs')
async def sso_acs(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    auth = saml.init_saml_auth(await prepare_saml_request(request), settings)
    auth.process_response()
    errors = auth.get_errors()
    if errors:
        raise HTTPException(status_code=400, detail={'saml_errors': errors})
    if not auth.is_authenticated():
        raise HTTPException(status_code=401, detail='SAML authentication failed')

    subject, email, name = saml.extract_identity(auth)
    if not email:
        raise HTTPException(status_code=400, detail='Email not found in SAML response')

    user = accounts.social_login(db, settings, provider='saml', subject=subject, email=email, name=name)
    response = RedirectResponse(url=post_login_destination(user), status_code=status.HTTP_303_SEE_OTHER)
    issue_session(db, user, response, settings)
    return response


@router.get('/sso/metadata')
def sso_metadata(settings: Settings = Depends(get_settings)):
    metadata, errors = saml.generate_sp_metadata(settings)
    if errors:
        raise HTTPException(status_code=500, detail={'metadata_errors': errors})
    return Response(content=metadata, media_type='application/xml')
