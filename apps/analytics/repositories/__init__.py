from .performance import monitor_query_performance

__all__ = ['monitor_query_performance']
