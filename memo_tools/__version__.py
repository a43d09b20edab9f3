__title__ = 'memo_tools'
__description__ = 'Memoizing wrappers / object proxies and structural copy / merge helpers'
__version__ = '2024.06.02'
