from .simulated_provider import SimulatedProvider, prepare_messages, probability_from_logprobs

__all__ = ["SimulatedProvider", "prepare_messages", "probability_from_logprobs"]
