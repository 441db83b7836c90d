"""交易图表智能分析后端应用包。"""
