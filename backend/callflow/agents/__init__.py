from callflow.agents.dialogue_policy import DialoguePolicy, GenerativePolicy, RuleBasedPolicy, build_dialogue_policy
from callflow.agents.voice_agent import VoiceAgent, WebhookState

__all__ = [
    'DialoguePolicy',
    'GenerativePolicy',
    'RuleBasedPolicy',
    'build_dialogue_policy',
    'VoiceAgent',
    'WebhookState'
]
