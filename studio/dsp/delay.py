import torch

from studio.dsp.stage import Stage


class DelayLine:
    def __init__(self, max_delay_samples: int, channels: int = 2, device: torch.device = None):
        if device is None:
            device = torch.device('cpu')

        # Headroom past the longest delay so one block can be written while reading
        self.buffer_size = int(max_delay_samples) + 4096
        self.channels = channels
        self.buffer = torch.zeros(channels, self.buffer_size, device=device)
        self.write_ptr = 0
        self.device = device

    def reset(self):
        self.buffer.zero_()
        self.write_ptr = 0

    def write_block(self, input_block: torch.Tensor):
        """
        Write a (channels, frames) block to the delay line.
        Updates write_ptr.
        """
        block_len = input_block.shape[-1]
        end_ptr = self.write_ptr + block_len

        if end_ptr <= self.buffer_size:
            self.buffer[:, self.write_ptr:end_ptr] = input_block
        else:
            # Split write
            first_chunk = self.buffer_size - self.write_ptr
            self.buffer[:, self.write_ptr:] = input_block[:, :first_chunk]
            self.buffer[:, :end_ptr - self.buffer_size] = input_block[:, first_chunk:]

        self.write_ptr = end_ptr % self.buffer_size

    def read_block(self, delay_samples: float, count: int) -> torch.Tensor:
        """
        Read `count` frames from `delay_samples` in the past, relative to the
        current write_ptr (read before writing the block at the same time).
        Uses linear interpolation for fractional delay.
        """
        grid = torch.arange(count, device=self.device, dtype=torch.float64)
        read_centers = (self.write_ptr + grid) - float(delay_samples)

        indices_floor = torch.floor(read_centers).long()
        indices_ceil = indices_floor + 1
        frac = (read_centers - indices_floor).to(self.buffer.dtype)

        indices_floor = indices_floor % self.buffer_size
        indices_ceil = indices_ceil % self.buffer_size

        sample_floor = self.buffer[:, indices_floor]
        sample_ceil = self.buffer[:, indices_ceil]

        return sample_floor * (1.0 - frac) + sample_ceil * frac


class FeedbackDelay(Stage):
    """
    Delay with its output fed back into its input.
    Inside the feedback loop the delay is never shorter than one block, so a
    whole block can be read before the block is written.
    """

    def __init__(self, sample_rate: int, max_delay: float, time: float = 0.0, feedback: float = 0.0, channels: int = 2):
        self.sample_rate = sample_rate
        self.max_delay = max_delay
        self.time = time
        self.feedback = feedback
        self.line = DelayLine(int(max_delay * sample_rate), channels=channels)

    def set_params(self, time: float = None, feedback: float = None) -> None:
        if time is not None:
            self.time = min(max(float(time), 0.0), self.max_delay)
        if feedback is not None:
            self.feedback = float(feedback)

    def reset(self) -> None:
        self.line.reset()

    def process(self, block: torch.Tensor) -> torch.Tensor:
        frames = block.shape[-1]
        delay_samples = max(self.time * self.sample_rate, float(frames))
        delayed = self.line.read_block(delay_samples, frames)
        self.line.write_block(block + delayed * self.feedback)
        return delayed
