"""
TS GKE Bootstrap
GKE 클러스터에 External Secrets Operator와 Tailscale Operator를 Workload Identity로 연결하는 에이전트

Features:
- GKE 클러스터 생성 및 자격 증명 설정
- Google Secret Manager에 Tailscale OAuth 클라이언트 저장
- Workload Identity Federation 기반 IAM 바인딩
- Helm 기반 ESO / Tailscale Operator 설치
- SecretStore / ExternalSecret 렌더링 및 적용
- idempotent 및 롤백 지원
- 상태 점검 및 런북 자동 생성
"""

__version__ = "1.0.0"
__author__ = "DevOps Team"
