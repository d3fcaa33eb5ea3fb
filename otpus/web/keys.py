from aiogram import Bot, Dispatcher
from aiohttp import web

from ..services.notifier import ChatNotifier
from ..services.onboarding import OnboardingService

BOT = web.AppKey("bot", Bot)
DISPATCHER = web.AppKey("dispatcher", Dispatcher)
NOTIFIER = web.AppKey("notifier", ChatNotifier)
ONBOARDING = web.AppKey("onboarding", OnboardingService)
