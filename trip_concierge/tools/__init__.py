from .logistics import plan_logistics
from .weather import WeatherClient, get_current_weather
from .images import ImageGenerator
