"""
Capacidade de Sprint e Sincronização Otimista de Escala

Este pacote implementa o núcleo do painel de escala dos times: calendário de dias
úteis da sprint, cálculo de capacidade por papel (membro regular ou gestor) e a
sincronização otimista das marcações locais com o serviço de persistência remoto,
com debounce, marcação de falhas, sincronização incremental e cache com TTL e tags.
"""

__version__ = "1.0.0"
