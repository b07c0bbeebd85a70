"""Infrastructure: configuration, providers, messaging and factories"""
