"""
Offline analysis of decoded buffers: tempo/downbeat, vocal onset, alignment, waveform summaries.
"""
from studio.analysis.alignment import AlignmentPlanner
from studio.analysis.beat import BeatAnalyzer
from studio.analysis.onset import OnsetDetector
from studio.analysis.waveform import create_waveform

__all__ = ["AlignmentPlanner", "BeatAnalyzer", "OnsetDetector", "create_waveform"]
