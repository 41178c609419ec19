from .calls import bp
from .voice import bp as voice_bp
