from pathlib import Path
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from ..models.config import SessionState


class SessionRepository:
    """Grava e carrega o estado local da sessão (time selecionado, aba ativa e último sync)"""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> SessionState:
        """
        Carrega o estado da sessão

        Returns:
            SessionState: Estado gravado ou o padrão se o arquivo não existir ou estiver corrompido
        """
        if not self.path.exists():
            return SessionState()
        try:
            return SessionState.model_validate_json(self.path.read_text(encoding="utf-8"))
        except PydanticValidationError as e:
            logger.warning(f"Sessão em {self.path} ignorada: {str(e)}")
            return SessionState()

    def save(self, state: SessionState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        logger.debug(f"Sessão gravada em {self.path}")
