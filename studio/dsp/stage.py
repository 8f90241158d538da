import torch


class Stage:
    """
    One processing stage of the signal graph.
    Blocks are float tensors shaped (channels, frames). Stages keep their own
    state between blocks; reset() clears it.
    """

    def process(self, block: torch.Tensor) -> torch.Tensor:
        raise NotImplementedError

    def reset(self) -> None:
        pass

    def __call__(self, block: torch.Tensor) -> torch.Tensor:
        return self.process(block)
