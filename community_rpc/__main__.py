from community_rpc.serve import main

main()
