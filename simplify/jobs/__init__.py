"""
Job queue, worker lock, worker dispatch and the scheduling trigger path.
"""
