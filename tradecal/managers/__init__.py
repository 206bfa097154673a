"""
Managers
Time (calendar resolution) and calendar scheduling managers
"""
