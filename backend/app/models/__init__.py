from app.models.user import User
from app.models.phone_verification import PhoneVerification
from app.models.auth_token import AuthToken
