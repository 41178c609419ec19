from .account import Account
from .user import User
from .call import CallRecord
from .feedback import Feedback
from .behavior import Behavior
from .voice_session import VoiceTrainingSession
# base and mixins are imported by the above as needed
